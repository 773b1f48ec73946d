from .Session import Session
from .Profile import Profile
from .Balance import Balance
from .CreditPackage import CreditPackage
from .Generation import Generation
