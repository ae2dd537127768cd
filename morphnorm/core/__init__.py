"""Core computational modules for morphnorm.

This package contains the main analysis engines:
- normalization: Variance stabilization, variability-based feature exclusion,
  batch centering and control-anchored robust scaling
"""
