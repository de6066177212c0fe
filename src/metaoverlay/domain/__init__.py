"""Domain core: values, paths, model, customization engine and ports."""
