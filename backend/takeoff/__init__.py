"""
Takeoff Estimator — assembly / bill-of-materials resolution engine.

Turns a library of parameterized assembly definitions, a set of measured
drawing geometry and the assembly instances placed on a project into a flat,
deterministic list of material quantities.
"""

__version__ = "1.0.0"
