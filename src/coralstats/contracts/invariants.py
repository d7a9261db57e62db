"""Formal engine invariants.

This file documents what each stage MUST produce. Use it as a reviewer
anchor and system reference.
"""

ENGINE_INVARIANTS = {
    "size_classes": [
        "Breakpoints strictly ascending, at least 2 of them",
        "Every size >= first breakpoint maps to exactly one class",
    ],

    "group_summaries": [
        "No group with n = 0 is emitted",
        "Proportions: 0 <= ci_lower <= rate <= ci_upper <= 1",
        "Sequence sorted by the documented key (descending n or class order)",
    ],

    "survival_model": [
        "Fitted only on rows with size > 0 and a known outcome",
        "0 <= pseudo_r_squared <= 1 (deviance <= null deviance)",
        "Prediction curve probabilities and CI bounds within [0, 1]",
    ],

    "meta_analysis": [
        "0 <= I² <= 100",
        "tau² >= 0",
        "Per-study weights sum to 1",
        "Publication bias is null with fewer than 3 studies",
    ],

    "population_matrix": [
        "Matrix is square, dense, finite, every cell in [0, 1]",
        "Per source class, survival-conditioned fates sum to <= 1",
        "Dominant eigenvalue real and positive",
        "Stable stage distribution sums to 1",
        "Elasticities sum to 100% within tolerance",
    ],

    "quality": [
        "Warnings are emitted in fixed rule order and quote their value",
    ],
}
