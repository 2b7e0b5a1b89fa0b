"""Built-in vendor adapters (one module per slug, loaded by discovery)."""
