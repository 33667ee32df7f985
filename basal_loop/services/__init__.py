"""Services: pump history ledger, IoB, forecast and the SMB-basal manager."""
