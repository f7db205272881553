"""verifygate - account claims with email verification and admin review."""

__version__ = "0.1.0"
