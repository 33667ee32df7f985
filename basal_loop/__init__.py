"""SMB-basal closed-loop core: pulse scheduler, pump history ledger and IoB."""

__version__ = "0.1.0"
