"""Worker-side code that runs inside the isolated program process."""
