"""
mir_dump - Borrow-check Fact Visualizer
=======================================

Post-analysis stage for one compiled function: loads the borrow-check input
facts the compiler emitted, completes the loan-creation facts it leaves out,
runs a solver over them and renders the control-flow graph as a Graphviz
digraph annotated, at every program point, with live loans, loan-creation
facts, live regions and definitely initialized places.

Core modules
------------
errors
    Error codes and the exception hierarchy.
mir
    Control-flow graph model and the JSON bundle loader.
facts
    Program points, the point interner and the relation-file loader.
regions
    Association of locals with the regions of their types.
fake_facts
    Completion of loan-creation facts for reference moves and calls.
solver
    Solver protocol and the bundled fixpoint solver.
initialization
    Definitely-initialized analysis results.
polonius_info
    Per-function query façade.
mir_dumper
    Per-point report and DOT rendering.
configuration
    Layered run configuration.
driver
    Function selection and the per-function pipeline.

Quick start
-----------
>>> from mir_dump import Configuration, Pipeline, load_bundle
>>> config = Configuration.load()
>>> summary = Pipeline(config).run(load_bundle("crate.mir.json"))  # doctest: +SKIP

Package layout
--------------
::

    mir_dump/
    ├── __init__.py            ← this file
    ├── __main__.py
    ├── configuration.py
    ├── driver.py
    ├── errors.py
    ├── facts.py
    ├── fake_facts.py
    ├── initialization.py
    ├── mir.py
    ├── mir_dumper.py
    ├── polonius_info.py
    ├── regions.py
    └── solver.py
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__all__: List[str] = []          # populated below

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Internal registry: (module_name, list_of_names_to_import)
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "errors": [
        "ErrorCode",
        "ErrorCodes",
        "MirDumpError",
        "ConsistencyError",
        "ConfigurationError",
        "FunctionDumpError",
        "FactLoadError",
        "MirLoadError",
        "ReportWriteError",
        "UnsupportedTerminatorError",
    ],
    "mir": [
        "Location",
        "Place",
        "Statement",
        "StatementKind",
        "Terminator",
        "TerminatorKind",
        "BasicBlock",
        "LocalDecl",
        "MirBody",
        "MirFunction",
        "load_bundle",
    ],
    "facts": [
        "Point",
        "PointType",
        "Interner",
        "AllInputFacts",
        "AllOutputFacts",
        "FactLoader",
    ],
    "regions": [
        "VariableRegions",
        "load_variable_regions",
    ],
    "fake_facts": [
        "FakeFacts",
        "add_fake_facts",
    ],
    "solver": [
        "Solver",
        "NaiveSolver",
    ],
    "initialization": [
        "InitializationResult",
        "TabularInitialization",
    ],
    "polonius_info": [
        "PoloniusInfo",
    ],
    "configuration": [
        "Configuration",
    ],
    "mir_dumper": [
        "EdgeKind",
        "Edge",
        "FunctionReport",
        "build_report",
        "write_dot",
        "render_dot",
        "dump_function",
    ],
    "driver": [
        "Pipeline",
        "DumpSummary",
        "analyze_function",
    ],
}


def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package namespace."""
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        raise ImportError(
            f"mir_dump: required submodule '{module_rel_name}' "
            f"failed to import: {exc}"
        ) from exc

    current_module = sys.modules[__name__]
    for name in names:
        obj = getattr(mod, name, None)
        if obj is None:
            raise AttributeError(f"mir_dump.{module_rel_name} does not export '{name}'")
        setattr(current_module, name, obj)
        __all__.append(name)

    setattr(current_module, module_rel_name, mod)
    if module_rel_name not in __all__:
        __all__.append(module_rel_name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names)

del _mod, _names

_log.debug("mir_dump %s: loaded %d core module(s)", __version__, len(_CORE_MODULES))
