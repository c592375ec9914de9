"""School computer-based testing portal: exam authoring, attempts and grading."""
