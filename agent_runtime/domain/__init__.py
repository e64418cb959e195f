"""Domain layer: models, provider interfaces and deterministic services"""
