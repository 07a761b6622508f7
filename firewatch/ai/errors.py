from __future__ import annotations


class DetectorError(RuntimeError):
    """Base class for fire detector failures."""


class LoadFailure(DetectorError):
    """The model artifact is missing, corrupt or incompatible."""


class NotReady(DetectorError):
    """The detector was used before ``load()`` or after ``close()``."""


class DecodeError(DetectorError):
    """The supplied bytes are not a decodable image."""


class InferenceError(DetectorError):
    """The model runtime failed while executing."""


__all__ = ["DetectorError", "LoadFailure", "NotReady", "DecodeError", "InferenceError"]
