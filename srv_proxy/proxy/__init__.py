from .route import router

__all__ = ["router"]
