# Host notebook abstractions: the rule engine only sees cells and notebooks
# through the protocols in handles.py.
