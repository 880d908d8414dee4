from __future__ import annotations

import logging

import hydra
import numpy as np
import torch
from omegaconf import DictConfig

from hgkit.api import estimate_homography, lmeds_iteration_cap, make_sample_indices
from hgkit.core.geometry import inlier_mask, rmse_inliers
from hgkit.core.types import HomographyType
from hgkit.io.reader import load_correspondences
from hgkit.io.writer import save_result
from hgkit.utils.device import resolve_device
from hgkit.utils.hydra_tools import instantiate_stages

LOGGER = logging.getLogger(__name__)

_DTYPES = {"float32": torch.float32, "float64": torch.float64}


@hydra.main(config_path="../configs", config_name="config", version_base=None)
def main(cfg: DictConfig):
    src, dst = load_correspondences(cfg.data.path)
    est = cfg.estimator
    htype = HomographyType.parse(est.htype)
    dtype = _DTYPES[str(est.dtype)]
    device = resolve_device(est.get("device"))

    iterations = int(est.iterations)
    if htype is HomographyType.LMEDS and est.get("adaptive_lmeds", True):
        iterations = lmeds_iteration_cap(iterations)

    rnd = make_sample_indices(len(src), iterations, seed=est.get("seed"), device=device)
    stages = instantiate_stages(cfg.pipeline.stages)
    res = estimate_homography(
        src[:, 0], src[:, 1], dst[:, 0], dst[:, 1],
        rnd,
        iterations=iterations,
        inlier_thr=float(est.inlier_thr),
        htype=htype,
        device=device,
        dtype=dtype,
        stages=stages,
    )

    H = res.H.detach().cpu().double().numpy()
    mask = inlier_mask(H, src, dst, float(est.inlier_thr))
    rmse = rmse_inliers(H, src, dst, mask)
    LOGGER.info("htype=%s iterations=%d inliers=%d/%d rmse_px=%s", htype.value, iterations, res.inliers, len(src), rmse)
    LOGGER.info("H=\n%s", np.array2string(H, precision=6))

    if cfg.output.get("path"):
        out = save_result(
            cfg.output.path,
            H,
            res.inliers,
            extra={"htype": htype.value, "iterations": iterations, "index": res.index, "rmse_px": rmse},
        )
        LOGGER.info("saved %s", out)


if __name__ == "__main__":
    main()
