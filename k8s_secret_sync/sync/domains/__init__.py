"""Domain layer: models, annotation schema, configuration, providers and cluster access."""
