# panelgen/__init__.py
from .config import config, load_config
from .logger import get_logger
from .schemas import (
    CameraAngle,
    CharacterProfile,
    GenerationOptions,
    Panel,
    PanelRevisionCandidate,
    ProgressEvent,
    ReferenceSet,
    Scene,
)


__all__ = ["config",
           "load_config",
           "get_logger",
           "CameraAngle",
           "CharacterProfile",
           "GenerationOptions",
           "Panel",
           "PanelRevisionCandidate",
           "ProgressEvent",
           "ReferenceSet",
           "Scene",
           ]
