"""Provider adapters: one module per AI backend."""
