from __future__ import annotations


class FocusBuddyError(Exception):
    """Base class for engine failures."""


class PermissionDenied(FocusBuddyError):
    """Camera access was refused. Terminal until the user grants access again."""


class DeviceError(FocusBuddyError):
    """Camera could not be opened or configured for reasons other than permissions."""


class ModelLoadFailure(FocusBuddyError):
    """A landmark backend could not be initialized; the next provider is tried."""


class FrameProcessingError(FocusBuddyError):
    """Detection failed on a single frame; the frame counts as "no face"."""


class DecayServiceUnavailable(FocusBuddyError):
    """The idle-penalty helper failed; the penalty is skipped for this cycle."""
