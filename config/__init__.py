"""Run configuration: dataclasses and the YAML/env loader."""
