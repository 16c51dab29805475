"""Pipeline stages: watcher, cataloger, extractor, modeler."""
