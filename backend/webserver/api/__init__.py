"""HTTP surface: router, middlewares and built-in handlers."""
