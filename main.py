from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Cookie, Depends, FastAPI, File, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError

import database
import media
import settings
from auth import AccessGate, SessionTokenService, hash_password, verify_password
from cart import CartManager
from catalog import CatalogQueryEngine
from database import create_document, get_db, parse_object_id, serialize_doc
from errors import Forbidden, NotFound, StoreFailure, Unauthenticated, ValidationFailure
from logger import get_logger
from media import MediaHost, get_media_host
from schemas import Brand, Category, Product, Role, User as UserSchema

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    database.init_db()
    media.init_media()
    yield
    database.close_db()


app = FastAPI(title="Sneaker Shop API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error responses

@app.exception_handler(ValidationFailure)
def validation_failure_handler(request: Request, exc: ValidationFailure):
    return JSONResponse(status_code=400, content={"success": False, "field": exc.field, "message": exc.message})


@app.exception_handler(NotFound)
def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"success": False, "message": exc.message})


@app.exception_handler(Unauthenticated)
def unauthenticated_handler(request: Request, exc: Unauthenticated):
    return JSONResponse(status_code=401, content={"isAuth": False, "error": True, "message": exc.message})


@app.exception_handler(Forbidden)
def forbidden_handler(request: Request, exc: Forbidden):
    return JSONResponse(status_code=403, content={"success": False, "message": exc.message})


@app.exception_handler(StoreFailure)
def store_failure_handler(request: Request, exc: StoreFailure):
    return JSONResponse(status_code=400, content={"success": False, "err": exc.message})


# Dependencies

def get_sessions(db: Database = Depends(get_db)) -> SessionTokenService:
    return SessionTokenService(db)


def get_gate(sessions: SessionTokenService = Depends(get_sessions)) -> AccessGate:
    return AccessGate(sessions)


def get_catalog(db: Database = Depends(get_db)) -> CatalogQueryEngine:
    return CatalogQueryEngine(db)


def get_cart_manager(db: Database = Depends(get_db), catalog: CatalogQueryEngine = Depends(get_catalog)) -> CartManager:
    return CartManager(db, catalog)


def current_user(
    token: Optional[str] = Cookie(default=None, alias=settings.SESSION_COOKIE_NAME),
    gate: AccessGate = Depends(get_gate),
) -> Dict[str, Any]:
    return gate.authorize(token)


def admin_user(
    token: Optional[str] = Cookie(default=None, alias=settings.SESSION_COOKIE_NAME),
    gate: AccessGate = Depends(get_gate),
) -> Dict[str, Any]:
    return gate.authorize(token, Role.ADMIN)


def serialize_cart(cart: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [serialize_doc(line) for line in cart]


def cart_response(cart: List[Dict[str, Any]], detail: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "cartDetail": [serialize_doc(p) for p in detail],
        "cart": serialize_cart(cart),
    }


# Request models

class RegisterInput(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=5)
    name: str = Field(..., min_length=1, max_length=100)
    lastname: str = Field(..., min_length=1, max_length=100)


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class NamedInput(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class ProductIn(BaseModel):
    name: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    brand: str
    category: str
    stock: int = Field(0, ge=0)
    sizes: List[str] = []
    shipping: bool = False
    available: bool = True
    publish: bool = True
    images: List[Dict[str, Any]] = []


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    brand: Optional[str] = None
    category: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    sizes: Optional[List[str]] = None
    shipping: Optional[bool] = None
    available: Optional[bool] = None
    publish: Optional[bool] = None
    images: Optional[List[Dict[str, Any]]] = None


class ShopRequest(BaseModel):
    order: Optional[str] = None
    sortBy: Optional[str] = None
    limit: Optional[int] = None
    skip: Optional[int] = 0
    filters: Dict[str, Any] = {}


class MergeLine(BaseModel):
    productId: str
    quantity: int = Field(1, ge=1)


class MergeCartInput(BaseModel):
    items: List[MergeLine] = []


def _reference_ids(data: Dict[str, Any]) -> Dict[str, Any]:
    for field in ("brand", "category"):
        if field in data:
            oid = parse_object_id(data[field])
            if oid is None:
                raise ValidationFailure(f"Invalid {field} id", field=field)
            data[field] = oid
    return data


# Routes
@app.get("/")
def read_root():
    return {"message": "Sneaker Shop API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if settings.DATABASE_URL else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["database_name"] = database.db.name
            response["collections"] = database.db.list_collection_names()
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Categories and brands
@app.post("/api/products/categories")
def create_category(data: NamedInput, _: dict = Depends(admin_user), catalog: CatalogQueryEngine = Depends(get_catalog)):
    doc = catalog.create_category(Category(name=data.name))
    return {"success": True, "category": serialize_doc(doc)}


@app.get("/api/products/categories")
def list_categories(catalog: CatalogQueryEngine = Depends(get_catalog)):
    return [serialize_doc(d) for d in catalog.list_categories()]


@app.post("/api/products/brands")
def create_brand(data: NamedInput, _: dict = Depends(admin_user), catalog: CatalogQueryEngine = Depends(get_catalog)):
    doc = catalog.create_brand(Brand(name=data.name))
    return {"success": True, "brand": serialize_doc(doc)}


@app.get("/api/products/brands")
def list_brands(catalog: CatalogQueryEngine = Depends(get_catalog)):
    return [serialize_doc(d) for d in catalog.list_brands()]


# Products
@app.get("/api/products/sneakers/collections")
def list_collection(
    order: Optional[str] = None,
    sortBy: Optional[str] = None,
    limit: Optional[int] = None,
    catalog: CatalogQueryEngine = Depends(get_catalog),
):
    items = catalog.list_collection(sort_by=sortBy, order=order, limit=limit)
    return [serialize_doc(p) for p in items]


@app.get("/api/products/sneakers")
def get_products_by_id(
    id: str,
    type: Optional[str] = None,
    catalog: CatalogQueryEngine = Depends(get_catalog),
):
    ids = id if type == "array" else [id]
    return [serialize_doc(p) for p in catalog.fetch_by_ids(ids)]


@app.post("/api/products/sneakers")
def create_product(data: ProductIn, _: dict = Depends(admin_user), catalog: CatalogQueryEngine = Depends(get_catalog)):
    product = Product(**_reference_ids(data.model_dump()))
    doc = catalog.create_product(product)
    return {"success": True, "sneakers": serialize_doc(doc)}


@app.put("/api/products/sneakers/{product_id}")
def update_product(
    product_id: str,
    data: ProductUpdate,
    _: dict = Depends(admin_user),
    catalog: CatalogQueryEngine = Depends(get_catalog),
):
    changes = _reference_ids(data.model_dump(exclude_unset=True))
    doc = catalog.update_product(product_id, changes)
    return {"success": True, "sneakers": serialize_doc(doc)}


@app.post("/api/products/shop")
def shop(data: ShopRequest, catalog: CatalogQueryEngine = Depends(get_catalog)):
    items, total = catalog.query(
        filters=data.filters,
        sort_by=data.sortBy,
        order=data.order,
        skip=data.skip,
        limit=data.limit,
    )
    return {"size": len(items), "total": total, "sneakers": [serialize_doc(p) for p in items]}


# Users
@app.get("/api/users/auth")
def auth_check(user: dict = Depends(current_user)):
    role = user.get("role", Role.STANDARD)
    return {
        "isAdmin": role != Role.STANDARD,
        "isAuth": True,
        "email": user["email"],
        "name": user.get("name"),
        "lastname": user.get("lastname"),
        "role": role,
        "cart": serialize_cart(user.get("cart", [])),
        "history": [serialize_doc(h) for h in user.get("history", [])],
    }


@app.post("/api/users/register")
def register(payload: RegisterInput, db: Database = Depends(get_db)):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}, {"_id": 1}):
        raise ValidationFailure("Email already registered", field="email")
    user = UserSchema(
        email=email,
        password=hash_password(payload.password),
        name=payload.name,
        lastname=payload.lastname,
    )
    doc = user.model_dump()
    doc["role"] = int(user.role)
    try:
        user_id = create_document(db, "user", doc)
    except PyMongoError as e:
        logger.error(f"Failed to register {email}: {e}")
        raise StoreFailure(str(e)) from e
    logger.info(f"Registered user {user_id}")
    return {"success": True}


@app.post("/api/users/login")
def login(
    payload: LoginInput,
    response: Response,
    db: Database = Depends(get_db),
    sessions: SessionTokenService = Depends(get_sessions),
):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user:
        return {"loginSuccess": False, "message": "Email not found"}
    if not verify_password(payload.password, user.get("password", "")):
        return {"loginSuccess": False, "message": "Wrong password"}

    token = sessions.issue(user["_id"])
    max_age = int(sessions.ttl.total_seconds()) if sessions.ttl else None
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        token,
        max_age=max_age,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )
    return {"loginSuccess": True}


@app.get("/api/users/logout")
def logout(
    response: Response,
    user: dict = Depends(current_user),
    sessions: SessionTokenService = Depends(get_sessions),
):
    sessions.revoke(user["_id"])
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return {"success": True}


# Images
@app.post("/api/users/uploadimage")
def upload_image(
    file: UploadFile = File(...),
    _: dict = Depends(admin_user),
    host: MediaHost = Depends(get_media_host),
):
    return host.upload(file.file)


@app.get("/api/users/removeimage")
def remove_image(
    public_id: str,
    _: dict = Depends(admin_user),
    host: MediaHost = Depends(get_media_host),
):
    host.remove(public_id)
    return PlainTextResponse("Removed")


# Cart
@app.post("/api/users/addToCart")
def add_to_cart(
    productId: str,
    user: dict = Depends(current_user),
    carts: CartManager = Depends(get_cart_manager),
):
    cart = carts.add_to_cart(user["_id"], productId)
    return serialize_cart(cart)


@app.get("/api/users/removeFromCart")
def remove_from_cart(
    product_id: str = Query(..., alias="_id"),
    user: dict = Depends(current_user),
    carts: CartManager = Depends(get_cart_manager),
):
    cart, detail = carts.remove_from_cart(user["_id"], product_id)
    return cart_response(cart, detail)


@app.post("/api/users/mergeCart")
def merge_cart(
    payload: MergeCartInput,
    user: dict = Depends(current_user),
    carts: CartManager = Depends(get_cart_manager),
):
    cart, detail = carts.merge_cart(user["_id"], [(line.productId, line.quantity) for line in payload.items])
    return cart_response(cart, detail)


@app.get("/api/users/cart")
def get_cart(user: dict = Depends(current_user), carts: CartManager = Depends(get_cart_manager)):
    cart, detail = carts.get_cart(user["_id"])
    return cart_response(cart, detail)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
