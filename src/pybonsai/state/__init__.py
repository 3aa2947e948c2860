"""Store layer.

Both store models live here, along with the pieces they share: the
notifier, the per-path write queue and the event/outcome models. Stores are
the only components that replace state; everything else only reads it.
"""
