"""Table rendering utilities."""
from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd
from rich.console import Console
from rich.table import Table
from scipy import stats


_LATEX_REPLACEMENTS = {
    "\\": r"\textbackslash{}",
    "&": r"\&",
    "%": r"\%",
    "$": r"\$",
    "#": r"\#",
    "_": r"\_",
    "{": r"\{",
    "}": r"\}",
    "~": r"\textasciitilde{}",
    "^": r"\textasciicircum{}",
}


def _escape_latex(value: object) -> str:
    text = "" if pd.isna(value) else str(value)
    for needle, repl in _LATEX_REPLACEMENTS.items():
        text = text.replace(needle, repl)
    return text


def _format_cell(value: object, float_format: str) -> str:
    if pd.isna(value):
        return ""
    if isinstance(value, (bool, np.bool_)):
        return "Yes" if value else "No"
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    if isinstance(value, (float, np.floating)):
        return float_format % value
    return str(value)


def _dataframe_to_simple_latex(
    df: pd.DataFrame,
    *,
    caption: str,
    label: str,
    float_format: str = "%.4f",
    index: bool = False,
) -> str:
    frame = df.copy()
    if index:
        frame = frame.reset_index()

    cols = [str(c) for c in frame.columns]
    align = "".join("r" if pd.api.types.is_numeric_dtype(frame[c]) else "l" for c in frame.columns)

    lines: list[str] = []
    lines.append(r"\begin{table}[!htbp]")
    lines.append(r"\centering")
    lines.append(rf"\caption{{{_escape_latex(caption)}}}")
    lines.append(rf"\label{{{label}}}")
    lines.append(rf"\begin{{tabular}}{{{align}}}")
    lines.append(r"\hline")
    lines.append(" & ".join(_escape_latex(c) for c in cols) + r" \\")
    lines.append(r"\hline")
    for row in frame.itertuples(index=False):
        cells = [_escape_latex(_format_cell(value, float_format)) for value in row]
        lines.append(" & ".join(cells) + r" \\")
    lines.append(r"\hline")
    lines.append(r"\end{tabular}")
    lines.append(r"\end{table}")
    lines.append("")
    return "\n".join(lines)


def write_table(
    df: pd.DataFrame,
    csv_path: Path,
    tex_path: Path,
    *,
    caption: str,
    label: str,
    index: bool = False,
    float_format: str = "%.4f",
) -> None:
    csv_path.parent.mkdir(parents=True, exist_ok=True)
    tex_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(csv_path, index=index)
    tex_path.write_text(
        _dataframe_to_simple_latex(
            df,
            caption=caption,
            label=label,
            float_format=float_format,
            index=index,
        ),
        encoding="utf-8",
    )


def psd_covariance(cov: pd.DataFrame) -> tuple[pd.DataFrame, bool]:
    """Nearest PSD covariance: symmetrize and clip negative eigenvalues to zero.

    Multi-way clustered covariances are not guaranteed PSD. Returns the repaired
    matrix and whether any eigenvalue had to be clipped.
    """
    names = list(cov.index)
    mat = np.asarray(cov, dtype=float)
    mat = 0.5 * (mat + mat.T)
    if not np.isfinite(mat).all():
        return pd.DataFrame(mat, index=names, columns=names), False
    eigval, eigvec = np.linalg.eigh(mat)
    tol = np.finfo(float).eps * mat.shape[0] * np.abs(eigval).max()
    clipped = bool((eigval < -tol).any())
    if clipped:
        mat = (eigvec * np.clip(eigval, 0.0, None)) @ eigvec.T
    return pd.DataFrame(mat, index=names, columns=names), clipped


def coefficient_intervals(
    res,
    ci_level: float = 0.95,
    label: str = "",
    logger: logging.Logger | None = None,
) -> pd.DataFrame:
    """Coefficients, standard errors and normal confidence bounds from a PSD covariance.

    Columns: variable, coef, std_err, lower, upper. Intervals use the normal
    quantile at `ci_level`, as linearmodels' own `conf_int` does.
    """
    logger = logger if logger is not None else logging.getLogger("did_teffect")
    params = res.params
    cov, clipped = psd_covariance(res.cov.loc[params.index, params.index])
    if clipped:
        logger.warning("Covariance for %s was not positive semi-definite; negative eigenvalues set to zero.", label)
    std_err = np.sqrt(np.clip(np.diag(cov.to_numpy()), 0.0, None))
    z = stats.norm.ppf(0.5 + ci_level / 2)
    frame = pd.DataFrame(
        {
            "variable": list(params.index),
            "coef": params.to_numpy(dtype=float),
            "std_err": std_err,
        }
    )
    frame["lower"] = frame["coef"] - z * frame["std_err"]
    frame["upper"] = frame["coef"] + z * frame["std_err"]
    bad = frame.loc[~np.isfinite(frame[["std_err", "lower", "upper"]]).all(axis=1), "variable"]
    if not bad.empty:
        logger.warning("Non-finite standard errors for %s: %s", label, bad.tolist())
    return frame


def regression_frame(
    results: dict, ci_level: float = 0.95, logger: logging.Logger | None = None
) -> pd.DataFrame:
    """Tidy coefficient table from a mapping of model name -> linearmodels result."""
    frames = []
    for name, res in results.items():
        frame = coefficient_intervals(res, ci_level=ci_level, label=name, logger=logger)
        frame = frame.rename(columns={"lower": "ci_lower", "upper": "ci_upper"})
        frame.insert(0, "model", name)
        frame["n_obs"] = int(res.nobs)
        frames.append(frame)
    return pd.concat(frames, ignore_index=True)


def print_table(df: pd.DataFrame, title: str, console: Console | None = None, float_format: str = "%.4f") -> None:
    console = console or Console()
    table = Table(title=title, show_lines=False)
    for col in df.columns:
        justify = "right" if pd.api.types.is_numeric_dtype(df[col]) else "left"
        table.add_column(str(col), justify=justify)
    for row in df.itertuples(index=False):
        table.add_row(*[_format_cell(value, float_format) for value in row])
    console.print(table)
