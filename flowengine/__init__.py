"""flowengine: workflow selection and transition execution.

Picks the one applicable flow for a subject, keeps each flow's state graph
consistent, and runs the restriction/validation/action task pipeline when a
subject moves along a transition.
"""

__version__ = "1.0.0"
