"""Location Bounded Context.

Responsible for the Bayesian location estimate:
- Value Objects: LikelihoodTable, PriorRaster, PosteriorTable, PosteriorResult
- Services: VoronoiLikelihood, StrengthLikelihood, priors, compute_posterior
"""
