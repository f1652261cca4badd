"""
Kernel Layer

Foundations shared by the engines and the orchestration layer:
- Data models for the SQL store (competitions, submissions, voting, job records)
- Immutable event log
- Collaborator contracts: store, file URLs, notifications
- Clock and error taxonomy

Architectural invariants:
- Competition status only moves through a compare-and-set on its previous value
- Status changes and their job record are written in one transaction
- Side effects are persisted before the status that depends on them
"""
