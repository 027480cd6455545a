"""Built-in handler modules. Each exposes ``register()`` returning descriptors."""
