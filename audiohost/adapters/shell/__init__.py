"""Shell adapters — command runner and file patcher."""
