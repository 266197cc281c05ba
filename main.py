from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import Field
from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError

from config import DATABASE_NAME, PORT
from database import Reference, Store
from logger import get_logger
from media import MAX_COMMENT_IMAGES, MediaIntake
from schemas import Cart as CartSchema
from schemas import Comment as CommentSchema
from schemas import Document
from schemas import Order as OrderSchema
from schemas import OrderLine
from schemas import Product as ProductSchema
from schemas import User as UserSchema

log = get_logger("api")

CART_REFERENCES = [Reference("user", "user"), Reference("products", "product")]
ORDER_REFERENCES = [Reference("user", "user"), Reference("products.product", "product")]


# Partial-update models: every field optional, only supplied ones are written
class ProductUpdate(Document):
    description: Optional[str] = None
    image: Optional[str] = None
    pricing: Optional[float] = None
    shipping_cost: Optional[float] = None


class UserUpdate(Document):
    email: Optional[str] = None
    password: Optional[str] = None
    username: Optional[str] = None
    purchase_history: Optional[List[Any]] = None
    shipping_address: Optional[str] = None


class CommentUpdate(Document):
    product: Optional[str] = None
    user: Optional[str] = None
    rating: Optional[float] = None
    images: Optional[List[str]] = None
    text: Optional[str] = None


class CartUpdate(Document):
    products: Optional[List[str]] = None
    quantities: Optional[List[int]] = None
    user: Optional[str] = None


class OrderUpdate(Document):
    user: Optional[str] = None
    products: Optional[List[OrderLine]] = None
    total_amount: Optional[float] = None
    shipping_address: Optional[str] = None
    order_date: Optional[datetime] = None
    status: Optional[str] = Field(None, description="Free text, no transition rules")


# Dependencies
def get_store(request: Request) -> Store:
    return request.app.state.store


def get_media(request: Request) -> MediaIntake:
    return request.app.state.media


FORM_CONTENT_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")


def require_form_body(request: Request):
    content_type = request.headers.get("content-type")
    if content_type and not content_type.lower().startswith(FORM_CONTENT_TYPES):
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Expected multipart/form-data or application/x-www-form-urlencoded",
        )


def require_references(store: Store, collection: str, ids: Iterable[Optional[str]], label: str):
    ids = [i for i in ids if i is not None]
    missing = store[collection].missing_ids(ids)
    if missing:
        log.warning(f"rejected dangling {collection} reference(s): {missing}")
        raise HTTPException(status_code=400, detail=f"{label} not found: {', '.join(missing)}")


def warn_unpaired(cart: Dict[str, Any]):
    if len(cart.get("products", [])) != len(cart.get("quantities", [])):
        log.warning(f"cart {cart.get('id')} has {len(cart.get('products', []))} products "
                    f"but {len(cart.get('quantities', []))} quantities")


def found_or_404(doc, resource: str):
    if not doc:
        raise HTTPException(status_code=404, detail=f"{resource} not found")
    return doc


def deleted_or_404(deleted: bool, resource: str, doc_id: str):
    if not deleted:
        raise HTTPException(status_code=404, detail=f"{resource} not found")
    log.info(f"deleted {resource.lower()} {doc_id}")
    return {"message": f"{resource} deleted successfully"}


router = APIRouter()


# Health + test
@router.get("/")
def root():
    return {"message": "E-commerce catalog API running"}


@router.get("/test")
def test_database(store: Store = Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "database": "✅ Connected" if store.connected else "❌ Not Connected",
        "database_name": store.name or DATABASE_NAME,
        "collections": [],
    }
    try:
        response["collections"] = store.collection_names()[:10]
    except PyMongoError as e:
        response["error"] = str(e)[:120]
    return response


# Products
@router.post("/product", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_form_body)])
def create_product(
    description: Optional[str] = Form(None),
    pricing: Optional[float] = Form(None),
    shipping_cost: Optional[float] = Form(None, alias="shippingCost"),
    image: Optional[UploadFile] = File(None),
    store: Store = Depends(get_store),
    media: MediaIntake = Depends(get_media),
):
    product = ProductSchema(
        description=description,
        image=media.save(image),
        pricing=pricing,
        shipping_cost=shipping_cost,
    )
    created = store["product"].insert(product.to_document())
    log.info(f"created product {created['id']}")
    return created


@router.get("/products")
def list_products(store: Store = Depends(get_store)):
    return store["product"].list_all()


@router.get("/product/{product_id}")
def get_product(product_id: str, store: Store = Depends(get_store)):
    return found_or_404(store["product"].get_by_id(product_id), "Product")


@router.put("/product/{product_id}", dependencies=[Depends(require_form_body)])
def update_product(
    product_id: str,
    description: Optional[str] = Form(None),
    pricing: Optional[float] = Form(None),
    shipping_cost: Optional[float] = Form(None, alias="shippingCost"),
    image: Optional[UploadFile] = File(None),
    store: Store = Depends(get_store),
    media: MediaIntake = Depends(get_media),
):
    if not store["product"].get_by_id(product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    update = ProductUpdate(
        description=description,
        image=media.save(image),
        pricing=pricing,
        shipping_cost=shipping_cost,
    )
    updated = store["product"].update_by_id(product_id, update.model_dump(exclude_none=True, by_alias=True))
    return found_or_404(updated, "Product")


@router.delete("/product/{product_id}")
def delete_product(product_id: str, store: Store = Depends(get_store)):
    # carts, orders and comments pointing at it are left alone
    return deleted_or_404(store["product"].delete_by_id(product_id), "Product", product_id)


# Users
@router.post("/user", status_code=status.HTTP_201_CREATED)
def create_user(payload: UserSchema, store: Store = Depends(get_store)):
    created = store["user"].insert(payload.to_document())
    log.info(f"created user {created['id']}")
    return created


@router.get("/users")
def list_users(store: Store = Depends(get_store)):
    return store["user"].list_all()


@router.get("/user/{user_id}")
def get_user(user_id: str, store: Store = Depends(get_store)):
    return found_or_404(store["user"].get_by_id(user_id), "User")


@router.put("/user/{user_id}")
def update_user(user_id: str, body: UserUpdate, store: Store = Depends(get_store)):
    updated = store["user"].update_by_id(user_id, body.model_dump(exclude_none=True, by_alias=True))
    return found_or_404(updated, "User")


@router.delete("/user/{user_id}")
def delete_user(user_id: str, store: Store = Depends(get_store)):
    return deleted_or_404(store["user"].delete_by_id(user_id), "User", user_id)


# Comments
@router.post("/comment", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_form_body)])
def create_comment(
    product: str = Form(...),
    user: str = Form(...),
    rating: Optional[float] = Form(None),
    text: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    store: Store = Depends(get_store),
    media: MediaIntake = Depends(get_media),
):
    if images and len(images) > MAX_COMMENT_IMAGES:
        raise HTTPException(status_code=400, detail=f"At most {MAX_COMMENT_IMAGES} images per comment")
    require_references(store, "product", [product], "Product")
    require_references(store, "user", [user], "User")
    comment = CommentSchema(
        product=product,
        user=user,
        rating=rating,
        images=media.save_many(images),
        text=text,
    )
    created = store["comment"].insert(comment.to_document())
    log.info(f"created comment {created['id']} on product {product}")
    return created


@router.get("/comments")
def list_comments(store: Store = Depends(get_store)):
    return store["comment"].list_all()


@router.get("/comment/{comment_id}")
def get_comment(comment_id: str, store: Store = Depends(get_store)):
    return found_or_404(store["comment"].get_by_id(comment_id), "Comment")


@router.put("/comment/{comment_id}", dependencies=[Depends(require_form_body)])
def update_comment(
    comment_id: str,
    product: Optional[str] = Form(None),
    user: Optional[str] = Form(None),
    rating: Optional[float] = Form(None),
    text: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    store: Store = Depends(get_store),
    media: MediaIntake = Depends(get_media),
):
    if images and len(images) > MAX_COMMENT_IMAGES:
        raise HTTPException(status_code=400, detail=f"At most {MAX_COMMENT_IMAGES} images per comment")
    if not store["comment"].get_by_id(comment_id):
        raise HTTPException(status_code=404, detail="Comment not found")
    require_references(store, "product", [product], "Product")
    require_references(store, "user", [user], "User")
    update = CommentUpdate(
        product=product,
        user=user,
        rating=rating,
        # new images replace the whole list
        images=media.save_many(images) or None,
        text=text,
    )
    updated = store["comment"].update_by_id(comment_id, update.model_dump(exclude_none=True, by_alias=True))
    return found_or_404(updated, "Comment")


@router.delete("/comment/{comment_id}")
def delete_comment(comment_id: str, store: Store = Depends(get_store)):
    return deleted_or_404(store["comment"].delete_by_id(comment_id), "Comment", comment_id)


# Cart
@router.post("/cart", status_code=status.HTTP_201_CREATED)
def create_cart(payload: CartSchema, store: Store = Depends(get_store)):
    require_references(store, "user", [payload.user], "User")
    require_references(store, "product", payload.products, "Product")
    created = store["cart"].insert(payload.to_document())
    warn_unpaired(created)
    log.info(f"created cart {created['id']} for user {payload.user}")
    return created


@router.get("/carts")
def list_carts(store: Store = Depends(get_store)):
    return store["cart"].list_all(expand=CART_REFERENCES)


@router.get("/cart/{cart_id}")
def get_cart(cart_id: str, store: Store = Depends(get_store)):
    return found_or_404(store["cart"].get_by_id(cart_id, expand=CART_REFERENCES), "Cart")


@router.put("/cart/{cart_id}")
def update_cart(cart_id: str, body: CartUpdate, store: Store = Depends(get_store)):
    if body.user is not None:
        require_references(store, "user", [body.user], "User")
    if body.products:
        require_references(store, "product", body.products, "Product")
    updated = found_or_404(
        store["cart"].update_by_id(cart_id, body.model_dump(exclude_none=True, by_alias=True)),
        "Cart",
    )
    warn_unpaired(updated)
    return updated


@router.delete("/cart/{cart_id}")
def delete_cart(cart_id: str, store: Store = Depends(get_store)):
    return deleted_or_404(store["cart"].delete_by_id(cart_id), "Cart", cart_id)


# Orders
@router.post("/order", status_code=status.HTTP_201_CREATED)
def create_order(payload: OrderSchema, store: Store = Depends(get_store)):
    require_references(store, "user", [payload.user], "User")
    require_references(store, "product", [line.product for line in payload.products], "Product")
    created = store["order"].insert(payload.to_document())
    log.info(f"created order {created['id']} for user {payload.user}")
    return created


@router.get("/orders")
def list_orders(store: Store = Depends(get_store)):
    return store["order"].list_all(expand=ORDER_REFERENCES)


@router.get("/order/{order_id}")
def get_order(order_id: str, store: Store = Depends(get_store)):
    return found_or_404(store["order"].get_by_id(order_id, expand=ORDER_REFERENCES), "Order")


@router.put("/order/{order_id}")
def update_order(order_id: str, body: OrderUpdate, store: Store = Depends(get_store)):
    if body.user is not None:
        require_references(store, "user", [body.user], "User")
    if body.products:
        require_references(store, "product", [line.product for line in body.products], "Product")
    updated = store["order"].update_by_id(order_id, body.model_dump(exclude_none=True, by_alias=True))
    return found_or_404(updated, "Order")


@router.delete("/order/{order_id}")
def delete_order(order_id: str, store: Store = Depends(get_store)):
    return deleted_or_404(store["order"].delete_by_id(order_id), "Order", order_id)


# Validation and store errors
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = ["{}: {}".format(".".join(str(part) for part in err["loc"]), err["msg"]) for err in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": "; ".join(problems)})


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    key = (exc.details or {}).get("keyValue")
    detail = f"Duplicate value for {', '.join(key)}" if key else "Duplicate value for a unique field"
    return JSONResponse(status_code=400, content={"detail": detail})


async def connection_failure_handler(request: Request, exc: ConnectionFailure):
    log.error(f"database unavailable: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Database unavailable"})


async def store_error_handler(request: Request, exc: PyMongoError):
    log.error(f"unhandled store error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def create_app(store: Optional[Store] = None, media: Optional[MediaIntake] = None) -> FastAPI:
    store = store or Store()
    media = media or MediaIntake()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.media.prepare()
        app.state.store.connect()
        yield
        app.state.store.close()

    app = FastAPI(title="E-commerce Catalog API", version="1.0.0", lifespan=lifespan)
    app.state.store = store
    app.state.media = media
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(ConnectionFailure, connection_failure_handler)
    app.add_exception_handler(PyMongoError, store_error_handler)
    app.mount(media.url_prefix, StaticFiles(directory=media.directory, check_dir=False), name="uploads")
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
