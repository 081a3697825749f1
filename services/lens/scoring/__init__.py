"""
Fit scoring — pure, deterministic relevance scoring with explanations.

Modules
-------
fit_score   Weighted component score, reasons, highlights, slate overlap
"""
