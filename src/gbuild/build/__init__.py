"""
Run-level components for gbuild.

- build_context: immutable toolchain environment and run configuration
- error_collector: thread-safe collection of per-unit errors
- orchestrator: scan, resolve, build, test, install and clean phases of a run
"""
