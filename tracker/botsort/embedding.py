"""
    Appearance embeddings for detections.

    The tracker only needs something with ``extract(frame, bbox_tlwh)``. ``EmbeddingComputer``
    provides that around an already constructed re-identification network; loading
    weights and choosing hardware is left to the caller.
"""
import logging
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np
import torch

logger = logging.getLogger(__name__)


class EmbeddingComputer(object):
    """
    Runs a re-identification network on detection crops.

    model      : torch.nn.Module mapping a (N, 3, H, W) float batch to (N, D) features
    input_size : (width, height) the crops are resized to
    """

    def __init__(self, model: torch.nn.Module, input_size: Tuple[int, int] = (128, 256),
                 device: str = 'cpu', half: bool = False,
                 mean: Sequence[float] = (0.485, 0.456, 0.406), std: Sequence[float] = (0.229, 0.224, 0.225)):
        self.device = torch.device(device)
        self.half = half and self.device.type == 'cuda'
        self.model = model.to(self.device).eval()
        if self.half:
            self.model = self.model.half()
        self.input_size = tuple(input_size)
        self.mean = torch.tensor(mean, dtype=torch.float32).view(1, 3, 1, 1)
        self.std = torch.tensor(std, dtype=torch.float32).view(1, 3, 1, 1)

    @staticmethod
    def crop(frame: np.ndarray, bbox_tlwh: Sequence[float]) -> Optional[np.ndarray]:
        """Cut the box out of the frame, clipped to the image; None if nothing is left."""
        height, width = frame.shape[:2]
        x, y, w, h = [float(v) for v in bbox_tlwh]
        x1, y1 = max(int(np.floor(x)), 0), max(int(np.floor(y)), 0)
        x2, y2 = min(int(np.ceil(x + w)), width), min(int(np.ceil(y + h)), height)
        if x2 <= x1 or y2 <= y1:
            return None
        return frame[y1:y2, x1:x2]

    def _to_tensor(self, crops) -> torch.Tensor:
        batch = []
        for crop in crops:
            if crop.ndim == 2:
                crop = cv2.cvtColor(crop, cv2.COLOR_GRAY2BGR)
            resized = cv2.resize(crop, self.input_size, interpolation=cv2.INTER_LINEAR)
            rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)
            batch.append(torch.from_numpy(np.ascontiguousarray(rgb)).permute(2, 0, 1))
        tensor = torch.stack(batch).float() / 255.0
        tensor = (tensor - self.mean) / self.std
        tensor = tensor.to(self.device)
        return tensor.half() if self.half else tensor

    def compute_embedding(self, frame: np.ndarray, tlwhs: Sequence[Sequence[float]]) -> np.ndarray:
        """
        Embeddings for several boxes of one frame as an (N, D) array of unit vectors.
        Rows for boxes that fall outside the frame are NaN.
        """
        crops = [self.crop(frame, tlwh) for tlwh in tlwhs]
        valid = [i for i, c in enumerate(crops) if c is not None]
        if not valid:
            logger.debug("none of %d boxes lies inside the frame", len(crops))
            return np.full((len(crops), 0), np.nan)

        with torch.no_grad():
            features = self.model(self._to_tensor([crops[i] for i in valid]))
        features = features.float().reshape(len(valid), -1).cpu().numpy()
        norms = np.linalg.norm(features, axis=1, keepdims=True)
        features = features / np.maximum(norms, 1e-12)

        out = np.full((len(crops), features.shape[1]), np.nan)
        out[valid] = features
        return out

    def extract(self, frame: np.ndarray, bbox_tlwh: Sequence[float]) -> Optional[np.ndarray]:
        emb = self.compute_embedding(frame, [bbox_tlwh])
        if emb.shape[1] == 0 or not np.all(np.isfinite(emb[0])):
            return None
        return emb[0]
