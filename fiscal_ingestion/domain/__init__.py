"""Pure domain layer for fiscal imports: types, lifecycle, tokenizer, parser."""
