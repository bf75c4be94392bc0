def first_of(strategies, subject, default=None):
    """
    Try each strategy on `subject` in order and return the first truthy
    result. New sources are added by appending to the strategy list rather
    than nesting another conditional at the call site.
    """
    for strategy in strategies:
        result = strategy(subject)
        if result:
            return result
    return default
