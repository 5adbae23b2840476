"""Model providers and prompt builders."""
