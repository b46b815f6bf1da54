from slowapi import Limiter
from slowapi.util import get_remote_address

# Khóa theo IP của kết nối (request.client), không đọc X-Forwarded-For do client tự gửi.
# Sau reverse proxy: chạy uvicorn với --proxy-headers --forwarded-allow-ips=<IP proxy>
# để request.client là IP thật của người dùng.
# moving-window: không cho dồn 2 lần giới hạn ở ranh giới cửa sổ
limiter = Limiter(key_func=get_remote_address, strategy="moving-window")
