"""Services — package, device, supervisor and stage logic."""
