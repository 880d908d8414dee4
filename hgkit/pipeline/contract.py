from __future__ import annotations

from typing import Any, Dict, List, Tuple


SCHEMA_VERSIONS: Dict[str, str] = {
    "correspondences": "correspondences@1.0.0",
    "state": "state@1.0.0",
    "result": "result@1.0.0",
}

PIPELINE_VERSION: str = "hgkit@1.0.0"


def ensure_versions(S) -> None:
    """Ensure version stamps exist in S.report["versions"]."""
    vers = S.report.get("versions") or {}
    if "schema_version" not in vers:
        vers["schema_version"] = dict(SCHEMA_VERSIONS)
    if "pipeline_version" not in vers:
        vers["pipeline_version"] = PIPELINE_VERSION
    if "stage_versions" not in vers:
        vers["stage_versions"] = []  # list of {name, version}
    S.report["versions"] = vers


def _has_attr_path(obj: Any, path: str) -> bool:
    # Supports dotted path under state attributes, including S.report.*
    parts = path.split(".")
    cur: Any = obj
    for p in parts:
        if isinstance(cur, dict):
            if p not in cur:
                return False
            cur = cur[p]
        else:
            if not hasattr(cur, p):
                return False
            cur = getattr(cur, p)
    return cur is not None


def _check_corr(S) -> List[str]:
    c = S.corr
    errs: List[str] = []
    lens = {int(t.shape[0]) for t in (c.x_src, c.y_src, c.x_dst, c.y_dst)}
    if len(lens) != 1:
        errs.append(f"correspondence lengths differ: {sorted(lens)}")
    elif c.nsamples < 4:
        errs.append(f"need >=4 correspondences, got {c.nsamples}")
    return errs


def can_run(stage, S) -> Tuple[bool, List[str]]:
    """Non-raising readiness check. Returns (ok, missing_reasons)."""
    reqs = getattr(stage, "required_inputs", []) or []
    advice: List[str] = []

    for r in reqs:
        if r == "corr":
            advice.extend(_check_corr(S))
        elif r == "rnd":
            if S.rnd is None or S.rnd.ndim != 2 or S.rnd.shape[0] < S.iterations or S.rnd.shape[1] != 4:
                advice.append("rnd must be (iterations, 4) sample indices")
        elif r == "best_idx_in_range":
            if S.best_idx is None or not (0 <= int(S.best_idx) < S.iterations):
                advice.append(f"best_idx {S.best_idx} outside [0, {S.iterations})")
        else:
            if not _has_attr_path(S, r):
                advice.append(f"state missing attribute '{r}'")

    return (len(advice) == 0, advice)


def validate_required_inputs(stage, S) -> None:
    """Validate preconditions declared by stage.required_inputs.

    Supported tokens:
      - corr: four equal-length sequences with >=4 entries
      - rnd: (iterations, 4) sample indices
      - best_idx_in_range: selected iteration index within [0, iterations)
      - any other token is a dotted attribute path that must be non-None
    """
    ok, advice = can_run(stage, S)
    if not ok:
        name = getattr(stage, "STAGE_NAME", stage.__class__.__name__)
        raise ValueError(f"Stage '{name}' precondition failed: " + "; ".join(advice))


def validate_produces(stage, S) -> None:
    prods = getattr(stage, "produces", []) or []
    missing = [p for p in prods if not _has_attr_path(S, p)]
    if missing:
        name = getattr(stage, "STAGE_NAME", stage.__class__.__name__)
        raise ValueError(f"Stage '{name}' postcondition failed: did not produce {missing}")


def add_stage_version(stage, S) -> None:
    name = getattr(stage, "STAGE_NAME", stage.__class__.__name__)
    ver = getattr(stage, "STAGE_VERSION", "0.0.0")
    ensure_versions(S)
    S.report["versions"]["stage_versions"].append({"name": name, "version": ver})
