"""
Accessmark - Accessibility annotations that survive document edits.

Accessmark attaches keyboard stops, labels and heading levels to design
nodes, keeps tab and reading order per container, and repaints only the
badges that changed.

Constraints:
- Host node data is the source of truth
- Link ids, never host node ids, identify annotations
- Order lists are contiguous from 0 after every command
- Mutation never spans an await
- Orphans and duplicate orders heal themselves

Annotations follow the node. Lists follow the user.
"""
