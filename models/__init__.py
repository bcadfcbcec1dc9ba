from .profile import Profile
from .user_subscription import UserSubscription
from .payment import Payment
