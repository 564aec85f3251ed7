table_primary_keys_dict = {
    # These are Lists of Strings
    "users": ["user_id"],
    "rewards": ["reward_id"],
    "redemptions": ["redemption_id"],
    "pointsHistory": ["entry_id"],

    # This is a List containing one Tuple
    "points": [("user_id", "delta", "kind")],
    "leaderboard": ["_id"],
}

def check_primary_keys(table_name: str, record: dict):
    primary_keys_options = table_primary_keys_dict.get(table_name)

    if not primary_keys_options:
        return False

    for pk_option in primary_keys_options:
        # Composite key: all the fields are required
        if isinstance(pk_option, tuple):
            if all(key in record for key in pk_option):
                return True

        # Single key
        elif isinstance(pk_option, str):
            if pk_option in record:
                return True

    return False
