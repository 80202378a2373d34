"""Student profile flags: rule evaluation and student name translation."""
