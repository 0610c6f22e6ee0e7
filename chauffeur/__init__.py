"""
Chauffeur fare computation, driver matching and assignment.
"""
