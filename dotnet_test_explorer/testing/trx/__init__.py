"""TRX payload builders."""
