"""Pure game rules: rarity, composition, scoring, reveal ordering, pack ledger."""
