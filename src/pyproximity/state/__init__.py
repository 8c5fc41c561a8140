"""State layer.

This package is the single source of truth for how raw fixes become stable
locations and how stable locations plus presence become a communication
mode.  Rules live in :mod:`~pyproximity.state.policy`; the debouncer is the
only place stable-location state is held.
"""
