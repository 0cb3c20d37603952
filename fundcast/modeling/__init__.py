"""Modeling package: logistic meet-goal fit, Gamma MCMC sampler, posterior compiler."""
