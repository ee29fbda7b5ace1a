"""Deep feature synthesis: planning, cutoff-time evaluation, and matrix assembly.

Modules
-------
spec        — FeatureSpec tree (base / transform / aggregation / direct)
planner     — Depth-bounded, deterministic enumeration of FeatureSpecs
evaluator   — Point-in-time evaluation of FeatureSpecs against EntitySetData
assembler   — Merge value maps into a FeatureMatrix aligned to the target index
quality     — DataQualityReport for an assembled FeatureMatrix
serialize   — JSON save/load of planned FeatureSpecs
dfs         — ``run_dfs()``: plan + evaluate + assemble in one call
"""
