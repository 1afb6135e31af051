"""
pprof_export — pprof profile builder for symbolized trace call stacks.

Converts callsite samples held in trace-processor style tables into a
serialized ``perftools.profiles.Profile`` document.
"""

__version__ = "0.1.0"
EXPORTER_VERSION = "v0"
PACKAGE_NAME = "pprof_export"
SCHEMA_VERSION = "0.1"
