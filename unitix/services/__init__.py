"""Domain flows. Each service takes the ``Database`` handle at construction."""
