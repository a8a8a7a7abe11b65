"""archstrap - idempotent Arch Linux post-install bootstrap."""

__version__ = "0.1.0"
